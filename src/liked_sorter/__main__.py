"""Entry point for running as a module."""
import uvicorn

from liked_sorter.config import configure_logging, env_int, load_local_env_file

if __name__ == "__main__":
    load_local_env_file()
    from liked_sorter.api import app, get_settings

    configure_logging(get_settings().log_level)
    uvicorn.run(app, host="0.0.0.0", port=env_int("PORT", 8000))
