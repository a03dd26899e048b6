"""
Run the Trading Indicators MCP server.
"""
import os
import sys

# Set working directory and path
backend_dir = os.path.dirname(os.path.abspath(__file__))
os.chdir(backend_dir)
sys.path.insert(0, backend_dir)

# Load environment
from dotenv import load_dotenv
load_dotenv(os.path.join(backend_dir, ".env"))

# Run uvicorn
import uvicorn

from indicator_server.core.config import get_settings

if __name__ == "__main__":
    settings = get_settings()

    print(f"Starting {settings.app_name} v{settings.app_version}...")
    print(f"Working directory: {backend_dir}")
    print(f"MCP endpoint: http://localhost:{settings.port}/mcp")
    print(f"API Docs: http://localhost:{settings.port}/docs")
    print("-" * 50)

    uvicorn.run(
        "indicator_server.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.environment == "development",
        log_level=settings.log_level,
    )
