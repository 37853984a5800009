"""
Media Tracker AI — Application entry point.

Run with:  python -m media_tracker
           uvicorn media_tracker.main:app --reload
"""

import uvicorn
from media_tracker.config import settings

if __name__ == "__main__":
    uvicorn.run(
        "media_tracker.main:app",
        host=settings.app_host,
        port=settings.app_port,
        log_level=settings.log_level,
        reload=True,
    )
