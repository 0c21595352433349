"""
Adapter pour les alertes du dépôt.

Les handlers d'événements (rupture de stock...) ne connaissent que
AbstractNotifications ; l'envoi réel par email est branché au bootstrap.
"""

from __future__ import annotations

import abc
import logging
import smtplib
from email.message import EmailMessage

logger = logging.getLogger(__name__)


class AbstractNotifications(abc.ABC):
    @abc.abstractmethod
    def send(self, destination: str, message: str) -> None:
        raise NotImplementedError


class EmailNotifications(AbstractNotifications):
    """Envoie les alertes par email (SMTP, texte brut UTF-8)."""

    OBJET = "Alerte stock échafaudage"

    def __init__(
        self,
        smtp_host: str = "localhost",
        smtp_port: int = 587,
        expéditeur: str = "stock@example.com",
    ):
        self.smtp_host = smtp_host
        self.smtp_port = smtp_port
        self.expéditeur = expéditeur

    def send(self, destination: str, message: str) -> None:
        email = EmailMessage()
        email["Subject"] = self.OBJET
        email["From"] = self.expéditeur
        email["To"] = destination
        email.set_content(message)
        with smtplib.SMTP(self.smtp_host, self.smtp_port) as smtp:
            smtp.send_message(email)
        logger.info("Alerte envoyée à %s", destination)
