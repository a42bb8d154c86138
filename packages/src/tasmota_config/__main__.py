"""Console entrypoint: ``tasmota-config`` / ``python -m tasmota_config``."""

from tasmota_config import App, __version__


def main() -> None:
    App(version=__version__).cli()


if __name__ == "__main__":
    main()
