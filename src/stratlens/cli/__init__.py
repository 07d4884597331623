def main() -> None:
    """CLI entrypoint for the stratlens console script."""
    from stratlens.cli.app import app

    app()
