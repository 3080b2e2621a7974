import os

import uvicorn

from app.core.config import settings


def main():
    if settings.debug:
        os.environ["PYTHONASYNCIODEBUG"] = "1"

    uvicorn.run(
        app="app.main:app",
        host=settings.backend_host,
        port=settings.backend_port,
        reload=settings.reload_uvicorn,
        workers=settings.workers_count,
        log_config=None,
        # Forwarding headers are resolved by get_client_ip against settings.trusted_proxies
        proxy_headers=False,
    )


if __name__ == "__main__":
    main()
