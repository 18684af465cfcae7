from .cli import app


def main():
    """The entrypoint for the `sqlchain` script defined in pyproject.toml."""
    app()


if __name__ == "__main__":
    main()
