# Emergent Scholarship - MCP Server Package
#
# mcp_scholarship_server.py exposes the review engine to agents over MCP.
# Run it directly (python _mcp_server/mcp_scholarship_server.py) for stdio
# transport.
