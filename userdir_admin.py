from dotenv import load_dotenv
from fastapi import FastAPI

from userdir.config import dlog, load_app_config
from userdir.directory import DirectoryClient
from userdir.store import build_table_store
from userdir.webui.auth import resolve_session_secret
from userdir.webui.routes import create_web_router
from userdir.webui.state import init_app_state


load_dotenv()
app = FastAPI(title="User Directory Admin")

_config = load_app_config()
_store = build_table_store(_config)
directory = DirectoryClient(_store, table=_config.table)

state = init_app_state(_config, directory, resolve_session_secret(_config))
app.include_router(create_web_router(state))
dlog("app_ready", {"backend": _config.backend, "table": _config.table})


if __name__ == "__main__":
    # Convenience for local runs: python userdir_admin.py --userdir-debug
    import os

    import uvicorn

    host = os.environ.get("HOST", "127.0.0.1")
    port = int(os.environ.get("PORT", "8000"))
    uvicorn.run("userdir_admin:app", host=host, port=port, reload=False)
