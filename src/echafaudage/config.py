"""
Configuration de l'application.

Les valeurs sont lues dans l'environnement (préfixe ECHAFAUDAGE_)
ou dans un fichier .env, avec validation Pydantic.
"""

from __future__ import annotations

import logging
from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict


class Paramètres(BaseSettings):
    """Configuration de l'application avec validation Pydantic"""

    model_config = SettingsConfigDict(
        env_prefix="ECHAFAUDAGE_",
        env_file=".env",
        extra="ignore",
    )

    # Base de données
    url_base_donnees: str = "sqlite:///echafaudage.db"
    niveau_isolation: str = "SERIALIZABLE"

    # Notifications
    smtp_hote: str = "localhost"
    smtp_port: int = 587
    expediteur_alertes: str = "stock@example.com"
    destinataire_alertes: str = "depot@example.com"

    # Journalisation
    niveau_log: str = "INFO"
    format_log: str = "%(asctime)s %(levelname)s %(name)s: %(message)s"

    # Écriture
    tentatives_conflit: int = 3

    # Lecture
    limite_historique: int = 100


@lru_cache
def get_paramètres() -> Paramètres:
    return Paramètres()


def configurer_logging(paramètres: Paramètres | None = None) -> None:
    """Applique niveau et format de log au logger racine du paquet."""
    paramètres = paramètres or get_paramètres()
    logging.basicConfig(format=paramètres.format_log)
    logging.getLogger("echafaudage").setLevel(paramètres.niveau_log.upper())
