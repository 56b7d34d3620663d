import uvicorn

from chat_orchestrator.application.api.api_server import create_app
from chat_orchestrator.infrastructure.config.settings import get_settings


def run() -> None:
    settings = get_settings()
    uvicorn.run(create_app(settings=settings), host=settings.host, port=settings.port, log_config=None)


if __name__ == "__main__":
    run()
