"""Run the API with uvicorn: ``python -m nearu``."""

from __future__ import annotations

import os

import uvicorn


def main() -> None:
	uvicorn.run(
		"nearu.main:app",
		host=os.environ.get("HOST", "0.0.0.0"),
		port=int(os.environ.get("PORT", "8000")),
		log_config=None,
	)


if __name__ == "__main__":
	main()
