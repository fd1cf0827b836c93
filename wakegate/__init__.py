"""wakegate: an on-demand reverse proxy for Docker containers.

 - routes requests by Host header to a configured backend
 - starts the backend's container group on the first request
 - shows a self-refreshing loading page while the backend boots
 - stops idle containers, and containers inside their sleep window

Route state lives in memory for the lifetime of the process.
"""
