from mcpwire import StreamingHTTPApp

from .math_mcp import build_math_server

# Run with: uvicorn examples.math_mcp.streaming_server:app
app = StreamingHTTPApp(build_math_server, path="/mcp").as_starlette()
