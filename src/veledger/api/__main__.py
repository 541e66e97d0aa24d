# src/veledger/api/__main__.py
from __future__ import annotations

import uvicorn

from veledger.env import load_dotenv_if_present


def main() -> None:
    # Load .env early so VELEDGER_* vars exist before anything reads them.
    load_dotenv_if_present()

    # Import after dotenv load (prevents "config read before env" surprises)
    from veledger.api.app import create_app
    from veledger.runtime.protocol_config import load_node_config

    node = load_node_config()
    uvicorn.run(create_app(), host=node.api_host, port=node.api_port, log_level=node.log_level.lower())


if __name__ == "__main__":
    main()
