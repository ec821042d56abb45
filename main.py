"""
Main entry point for the picture service.
"""

import uvicorn

if __name__ == "__main__":
    uvicorn.run("listing_pictures.app.api:app", host="0.0.0.0", port=8000, reload=True)
