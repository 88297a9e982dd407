# rpi_adapter/main.py
from __future__ import annotations

import faulthandler
import functools
import logging
import os
from pathlib import Path

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from rpi_adapter.api.config_api import create_config_router
from rpi_adapter.api.state_api import create_state_router
from rpi_adapter.config.adapter_config import AdapterConfigStore
from rpi_adapter.core.adapter import Adapter
from rpi_adapter.core.state_store import StateStore
from rpi_adapter.hw.drivers import load_line_driver, load_sensor_driver

faulthandler.enable()
logging.basicConfig(
    level=os.getenv("RPI_ADAPTER_LOG_LEVEL", "INFO").upper(),
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)

logger = logging.getLogger(__name__)

DATA_ROOT = Path(os.getenv("RPI_ADAPTER_DATA_ROOT", str(Path(__file__).resolve().parent / "data")))
CONFIG_PATH = Path(os.getenv("RPI_ADAPTER_CONFIG", str(DATA_ROOT / "adapter.yaml")))
DRIVER = os.getenv("RPI_ADAPTER_DRIVER", "auto")

HOST = os.getenv("RPI_ADAPTER_HOST", "0.0.0.0")
PORT = int(os.getenv("RPI_ADAPTER_PORT", "8087"))

# --- KONFIGURACJA, MAGAZYN, ADAPTER ---

config_store = AdapterConfigStore(CONFIG_PATH)
store = StateStore(DATA_ROOT / "states.yaml")

adapter = Adapter(
    store=store,
    config=config_store.load(),
    driver_factory=functools.partial(load_line_driver, DRIVER),
    sensor_factory=functools.partial(load_sensor_driver, DRIVER),
)

# --- FASTAPI / HTTP API ---

app = FastAPI(
    title="Raspberry Pi GPIO adapter",
    version="0.1.0",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.on_event("startup")
async def on_startup() -> None:
    logger.info("Starting adapter (driver=%s, config=%s)", DRIVER, CONFIG_PATH)
    await adapter.start()


@app.on_event("shutdown")
async def on_shutdown() -> None:
    logger.info("Shutdown requested: releasing GPIO...")
    await adapter.stop()
    logger.info("Shutdown handler finished.")


# --- ROUTERY ---

app.include_router(create_state_router(store=store), prefix="/api")
app.include_router(create_config_router(config_store=config_store), prefix="/api")


def main() -> None:
    import uvicorn

    uvicorn.run(app, host=HOST, port=PORT, log_level=os.getenv("RPI_ADAPTER_LOG_LEVEL", "info").lower())


if __name__ == "__main__":
    main()
