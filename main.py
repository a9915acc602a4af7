from soyscraper.run import _cli_entrypoint

if __name__ == "__main__":
    # Thin wrapper so the scraper can be started with ``python main.py``.
    raise SystemExit(_cli_entrypoint())
