"""
Service infrastructure shared by the seismic package and the API.

    config          settings from env / .env
    logging_config  JSON and console log formatting, request context
    errors          API exceptions and their JSON error bodies
    cache           Redis helpers backing the cluster cache
    middleware      request ids, timing, access log
    health          component health report
"""
