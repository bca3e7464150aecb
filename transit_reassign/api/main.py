"""
FastAPI para reasignación de entidades entre contenedores.

Capa HTTP sobre la sesión de reasignación (staging -> preview -> commit -> undo).
"""

import os

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from transit_reassign.api.router import router
from transit_reassign.infrastructure.logging_utils import configure_logging

configure_logging(os.environ.get("TRANSIT_REASSIGN_LOG_LEVEL", "INFO"))

app = FastAPI(
    title="Transit Reassign API",
    description="Staged, transactional reassignment of entities across containers",
    version="1.0.0",
)

origins = [
    origin.strip()
    for origin in os.environ.get("TRANSIT_REASSIGN_CORS_ORIGINS", "http://localhost:5173").split(",")
    if origin.strip()
]

app.add_middleware(
    CORSMiddleware,
    allow_origins=origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(router)


@app.get("/")
def root():
    """Endpoint raíz"""
    return {"message": "Transit Reassign API", "status": "ok"}


# Bloque para ejecutar con uvicorn
if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
