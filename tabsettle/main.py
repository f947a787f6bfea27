import logging
from contextlib import asynccontextmanager
from fastapi import FastAPI
from tabsettle.core.config import settings
from tabsettle.db.database import Base, engine, check_db_connection
from tabsettle.api.v1.routes.events import router as events_router
from tabsettle.api.v1.routes.groups import router as groups_router
from tabsettle.api.v1.routes.expenses import router as expenses_router
from tabsettle.api.v1.routes.settlements import router as settlements_router
from tabsettle.rabbitmq.producer import close_rabbitmq_producer

logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)

Base.metadata.create_all(bind=engine)


@asynccontextmanager
async def lifespan(app: FastAPI):
    yield
    close_rabbitmq_producer()


app = FastAPI(
    title="tabsettle - Settlement Engine",
    description="Turns shared event expenses into approved, trackable settlement payments",
    version="1.0.0",
    lifespan=lifespan
)

app.include_router(events_router)
app.include_router(groups_router)
app.include_router(expenses_router)
app.include_router(settlements_router)


@app.get("/")
def read_root():
    return {"message": "tabsettle API", "version": "1.0.0"}


@app.get("/health")
def health_check():
    return {"status": "healthy" if check_db_connection() else "degraded"}
