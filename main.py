from __future__ import annotations

from fastapi import FastAPI

from compass.app.api.app import create_app

app = create_app()


def mount_chat_interface(application: FastAPI) -> None:
    from chainlit.utils import mount_chainlit

    mount_chainlit(app=application, target="compass/chainlit_app.py", path="/chat")


mount_chat_interface(app)
