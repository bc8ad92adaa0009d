import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from coach_insights.router import router as analytics_router

from config import Settings
from database import engine
import models

logging.basicConfig(
    level=getattr(logging, Settings.LOG_LEVEL.upper(), logging.INFO),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)

# Create tables if missing
models.Base.metadata.create_all(bind=engine)

app = FastAPI(
    title="Coach Insights Analytics Service",
    description="Deduplicating ingest and KPI rollups for coaching app telemetry.",
    version="1.0.0"
)

# Clients sync from devices and a dashboard on any origin
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["GET", "POST", "OPTIONS"],
    allow_headers=["Content-Type"],
)

app.include_router(analytics_router)

@app.get("/")
async def health_check():
    """
    Health check
    """
    return {
        "status": "healthy",
        "service": "Coach Insights Analytics Service",
        "version": "1.0.0"
    }

if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=Settings.ANALYTICS_PORT)
