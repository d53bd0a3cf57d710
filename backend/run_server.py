# run_server.py
import uvicorn
from wastage_service.main import app

if __name__ == "__main__":
    # Behind the reverse proxy the service listens on loopback only
    uvicorn.run(
        app,
        host="127.0.0.1",
        port=5080,
        log_level="info",
    )
