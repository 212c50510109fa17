"""Configuration du logging racine (console + fichier optionnel)."""
import logging
import pathlib


def setup_logging(level: str | int = "INFO", log_file: str | pathlib.Path | None = None) -> None:
    """
    Configure le root logger.

    Args:
        level: Niveau ("DEBUG", "INFO", ... ou constante logging)
        log_file: Fichier de log optionnel (dossier créé si besoin)
    """
    if isinstance(level, str):
        level = logging.getLevelName(level.upper())
        if not isinstance(level, int):
            level = logging.INFO

    handlers: list[logging.Handler] = [logging.StreamHandler()]
    if log_file:
        log_path = pathlib.Path(log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(log_path))

    logging.basicConfig(
        level=level,
        format="%(asctime)s %(levelname)-8s %(name)s %(message)s",
        handlers=handlers,
        force=True,  # Override any existing config
    )

    # httpx est très bavard en INFO
    logging.getLogger("httpx").setLevel(logging.WARNING)
