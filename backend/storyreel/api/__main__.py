"""API server entry point for python -m storyreel.api"""
import uvicorn
from storyreel.config import get_settings

if __name__ == "__main__":
    settings = get_settings()
    uvicorn.run(
        "storyreel.api.app:app",
        host=settings.server.host,
        port=settings.server.port,
        reload=False,
    )
