"""
Modèle de domaine du stock de matériel d'échafaudage.

Le registre des mouvements est la seule source de vérité : chaque
Mouvement est immuable et ajouté en fin de registre. Les soldes
(stock global, inventaire par chantier, locations Layher) en sont
dérivés et peuvent toujours être reconstruits par rejeu.

L'agrégat Stock regroupe, pour un article du catalogue, ses mouvements
et les projections qui en découlent. C'est la frontière de cohérence :
la vérification de disponibilité et l'ajout au registre s'y font dans
la même opération.
"""

from __future__ import annotations

import enum
import uuid
from dataclasses import dataclass, field, replace
from datetime import date, datetime
from typing import Optional

from echafaudage.domain import events, projection


# --- Exceptions ---


class ErreurStock(Exception):
    """Classe de base des erreurs du registre ; `code` est lisible par une machine."""

    code = "erreur_stock"


class QuantitéInvalide(ErreurStock):
    """Levée quand une quantité n'est pas un entier strictement positif."""

    code = "quantite_invalide"


class MouvementInvalide(ErreurStock):
    """Levée quand un mouvement est incohérent (type inconnu, chantier manquant...)."""

    code = "mouvement_invalide"


class LocationInconnue(ErreurStock):
    code = "location_inconnue"


class LocationDéjàRetournée(ErreurStock):
    code = "location_deja_retournee"


@dataclass(frozen=True)
class LigneManquante:
    """Une ligne refusée faute de quantité suffisante."""

    article_id: str
    demandée: int
    disponible: int
    référence: Optional[str] = None

    @property
    def manquante(self) -> int:
        return max(0, self.demandée - self.disponible)

    def __str__(self) -> str:
        return (
            f"{self.référence or self.article_id}: besoin {self.demandée}, "
            f"disponible {self.disponible}"
        )


class StockInsuffisant(ErreurStock):
    """
    Levée quand un mouvement sortant ferait passer un solde sous zéro.

    Porte toutes les lignes fautives, pour qu'un import puisse les
    signaler en une seule fois.
    """

    code = "stock_insuffisant"

    def __init__(self, lignes: list[LigneManquante]):
        self.lignes = list(lignes)
        super().__init__(
            "Stock insuffisant : " + " ; ".join(str(ligne) for ligne in self.lignes)
        )


# --- Types de mouvement ---


class TypeMouvement(str, enum.Enum):
    ENTREE = "entree"
    SORTIE = "sortie"
    RETOUR = "retour"
    HS = "hs"
    REPARATION = "reparation"
    REBUT = "rebut"
    LAYHER_LOCATION = "layher_location"
    LAYHER_RETOUR = "layher_retour"


# Mouvements qui n'augmentent pas le stock utilisable : acceptés sur un article désactivé.
TYPES_AUTORISÉS_SI_INACTIF = frozenset({
    TypeMouvement.RETOUR,
    TypeMouvement.HS,
    TypeMouvement.REPARATION,
    TypeMouvement.REBUT,
    TypeMouvement.LAYHER_RETOUR,
})

TYPES_AVEC_CHANTIER = frozenset({TypeMouvement.SORTIE, TypeMouvement.RETOUR})


def type_mouvement(valeur: str) -> TypeMouvement:
    """Convertit une valeur brute en TypeMouvement, ou lève MouvementInvalide."""
    try:
        return TypeMouvement(valeur)
    except ValueError:
        raise MouvementInvalide(f"Type de mouvement inconnu : {valeur}") from None


def vérifier_quantité(quantité: object) -> int:
    """Une quantité est un entier strictement positif (les booléens sont refusés)."""
    if isinstance(quantité, bool) or not isinstance(quantité, int) or quantité <= 0:
        raise QuantitéInvalide(f"Quantité invalide : {quantité!r}")
    return quantité


def _nouvel_id() -> str:
    return uuid.uuid4().hex


# --- Catalogue et chantiers ---


class ArticleCatalogue:
    """
    Type d'élément d'échafaudage (référence, désignation, poids).

    Jamais supprimé : un article retiré est désactivé, pour que les
    mouvements historiques restent valides.
    """

    def __init__(
        self,
        référence: str,
        désignation: str,
        poids_unitaire: float,
        catégorie: Optional[str] = None,
        référence_layher: Optional[str] = None,
        actif: bool = True,
        id: Optional[str] = None,
    ):
        self.id = id or _nouvel_id()
        self.référence = référence
        self.désignation = désignation
        self.poids_unitaire = poids_unitaire
        self.catégorie = catégorie
        self.référence_layher = référence_layher
        self.actif = actif
        self.créé_le = datetime.now()
        self.modifié_le = self.créé_le

    def __repr__(self) -> str:
        return f"<ArticleCatalogue {self.référence}>"

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, ArticleCatalogue):
            return NotImplemented
        return self.id == other.id

    def __hash__(self) -> int:
        return hash(self.id)

    def modifier(self, **champs: object) -> None:
        """Met à jour les champs descriptifs fournis (les valeurs None sont ignorées)."""
        for nom, valeur in champs.items():
            if valeur is not None:
                setattr(self, nom, valeur)
        self.modifié_le = datetime.now()

    def désactiver(self) -> None:
        self.actif = False
        self.modifié_le = datetime.now()

    def réactiver(self) -> None:
        self.actif = True
        self.modifié_le = datetime.now()


class Chantier:
    """Chantier : emplacement virtuel qui détient du matériel prêté."""

    ACTIF = "actif"
    TERMINE = "termine"

    def __init__(
        self,
        numéro: str,
        nom: str,
        adresse: Optional[str] = None,
        date_début: Optional[date] = None,
        id: Optional[str] = None,
    ):
        self.id = id or _nouvel_id()
        self.numéro = numéro
        self.nom = nom
        self.adresse = adresse
        self.statut = Chantier.ACTIF
        self.date_début = date_début
        self.date_fin: Optional[date] = None
        self.événements: list[events.Event] = []

    def __repr__(self) -> str:
        return f"<Chantier {self.numéro}>"

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Chantier):
            return NotImplemented
        return self.id == other.id

    def __hash__(self) -> int:
        return hash(self.id)

    @property
    def est_actif(self) -> bool:
        return self.statut == Chantier.ACTIF

    def terminer(self, date_fin: Optional[date] = None) -> None:
        self.statut = Chantier.TERMINE
        self.date_fin = date_fin or date.today()
        self.événements.append(events.ChantierClôturé(chantier_id=self.id, numéro=self.numéro))


# --- Registre et projections ---


@dataclass(eq=False)
class Mouvement:
    """
    Transfert de quantité entre deux emplacements, typé.

    Immuable une fois écrit : une correction se fait en ajoutant un
    mouvement compensatoire, jamais en modifiant l'historique.
    La base refuse toute mise à jour (adapters/immutabilite.py).
    Deux mouvements sont égaux s'ils ont le même identifiant.
    """

    article_id: str
    type: TypeMouvement
    quantité: int
    source: Optional[str] = None
    destination: Optional[str] = None
    chantier_id: Optional[str] = None
    liste_id: Optional[str] = None
    location_id: Optional[str] = None
    notes: Optional[str] = None
    id: str = field(default_factory=_nouvel_id)
    créé_le: datetime = field(default_factory=datetime.now)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Mouvement):
            return NotImplemented
        return self.id == other.id

    def __hash__(self) -> int:
        return hash(self.id)


@dataclass(frozen=True)
class Disponibilité:
    """Résultat d'une vérification de disponibilité."""

    disponible: bool
    quantité_disponible: int
    quantité_manquante: int


@dataclass(frozen=True)
class ÉtatStock:
    """Photographie d'un SoldeStock, renvoyée à l'appelant après écriture."""

    article_id: str
    quantité_totale: int
    quantité_disponible: int
    quantité_sur_chantier: int
    quantité_hs: int
    quantité_layher: int


@dataclass(frozen=True)
class ÉtatLocation:
    location_id: str
    article_id: str
    numéro_commande: str
    statut: str
    quantité: int
    quantité_retournée: int


@dataclass(eq=False)
class SoldeStock:
    """
    Solde global d'un article, dérivé du registre.

    Conservation : totale = disponible + sur_chantier + hs + layher.
    """

    article_id: str
    quantité_totale: int = 0
    quantité_disponible: int = 0
    quantité_sur_chantier: int = 0
    quantité_hs: int = 0
    quantité_layher: int = 0

    def est_cohérent(self) -> bool:
        quantités = (
            self.quantité_disponible,
            self.quantité_sur_chantier,
            self.quantité_hs,
            self.quantité_layher,
        )
        return all(q >= 0 for q in quantités) and self.quantité_totale == sum(quantités)

    def instantané(self) -> ÉtatStock:
        return ÉtatStock(
            article_id=self.article_id,
            quantité_totale=self.quantité_totale,
            quantité_disponible=self.quantité_disponible,
            quantité_sur_chantier=self.quantité_sur_chantier,
            quantité_hs=self.quantité_hs,
            quantité_layher=self.quantité_layher,
        )

    def recopier(self, état: ÉtatStock) -> None:
        self.quantité_totale = état.quantité_totale
        self.quantité_disponible = état.quantité_disponible
        self.quantité_sur_chantier = état.quantité_sur_chantier
        self.quantité_hs = état.quantité_hs
        self.quantité_layher = état.quantité_layher


@dataclass(eq=False)
class InventaireChantier:
    """Matériel d'un article présent sur un chantier."""

    chantier_id: str
    article_id: str
    quantité_livrée: int = 0
    quantité_reçue: int = 0
    dernier_mouvement_le: Optional[datetime] = None

    @property
    def quantité_actuelle(self) -> int:
        return self.quantité_livrée - self.quantité_reçue


class LocationLayher:
    """
    Location de matériel chez Layher : en_cours -> retourne (terminal).

    Les retours partiels sont cumulés dans quantité_retournée ; la
    location passe à `retourne` quand tout a été rendu.
    """

    EN_COURS = "en_cours"
    RETOURNE = "retourne"

    def __init__(
        self,
        article_id: str,
        numéro_commande: str,
        quantité: int,
        date_location: Optional[date] = None,
        date_retour_prévue: Optional[date] = None,
        coût_location: Optional[float] = None,
        notes: Optional[str] = None,
        id: Optional[str] = None,
    ):
        self.id = id or _nouvel_id()
        self.article_id = article_id
        self.numéro_commande = numéro_commande
        self.quantité = quantité
        self.quantité_retournée = 0
        self.date_location = date_location or date.today()
        self.date_retour_prévue = date_retour_prévue
        self.date_retour_effective: Optional[date] = None
        self.coût_location = coût_location
        self.statut = LocationLayher.EN_COURS
        self.notes = notes

    def __repr__(self) -> str:
        return f"<LocationLayher {self.numéro_commande} {self.statut}>"

    @property
    def quantité_restante(self) -> int:
        return self.quantité - self.quantité_retournée

    def instantané(self) -> ÉtatLocation:
        return ÉtatLocation(
            location_id=self.id,
            article_id=self.article_id,
            numéro_commande=self.numéro_commande,
            statut=self.statut,
            quantité=self.quantité,
            quantité_retournée=self.quantité_retournée,
        )

    def enregistrer_retour(self, quantité: int, date_retour: Optional[date] = None) -> bool:
        """Cumule un retour ; renvoie True si la location est désormais close."""
        self.quantité_retournée += quantité
        if self.quantité_restante == 0:
            self.statut = LocationLayher.RETOURNE
            self.date_retour_effective = date_retour or date.today()
            return True
        return False


class Stock:
    """
    Agrégat racine : registre et soldes d'un article du catalogue.

    Toute écriture passe par enregistrer(), qui vérifie le solde
    concerné puis ajoute le mouvement et met à jour les projections
    de façon incrémentale. numéro_version sert de verrou optimiste.
    """

    def __init__(
        self,
        article_id: str,
        solde: Optional[SoldeStock] = None,
        inventaires: Optional[list[InventaireChantier]] = None,
        locations: Optional[list[LocationLayher]] = None,
        mouvements: Optional[list[Mouvement]] = None,
        numéro_version: int = 0,
    ):
        self.article_id = article_id
        self.solde = solde or SoldeStock(article_id=article_id)
        self.inventaires = inventaires or []
        self.locations = locations or []
        self.mouvements = mouvements or []
        self.numéro_version = numéro_version
        self.événements: list[events.Event] = []

    def __repr__(self) -> str:
        return f"<Stock {self.article_id} v{self.numéro_version}>"

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Stock):
            return NotImplemented
        return self.article_id == other.article_id

    def __hash__(self) -> int:
        return hash(self.article_id)

    # --- Lecture ---

    def inventaire(self, chantier_id: str) -> Optional[InventaireChantier]:
        return next((i for i in self.inventaires if i.chantier_id == chantier_id), None)

    def quantité_sur_chantier(self, chantier_id: str) -> int:
        inventaire = self.inventaire(chantier_id)
        return inventaire.quantité_actuelle if inventaire else 0

    def location(self, location_id: Optional[str]) -> Optional[LocationLayher]:
        return next((l for l in self.locations if l.id == location_id), None)

    def location_par_commande(self, numéro_commande: str) -> Optional[LocationLayher]:
        """La location en cours pour ce numéro de commande, sinon la plus récente."""
        candidates = [l for l in self.locations if l.numéro_commande == numéro_commande]
        en_cours = [l for l in candidates if l.statut == LocationLayher.EN_COURS]
        if en_cours:
            return en_cours[0]
        return candidates[-1] if candidates else None

    def vérifier_disponibilité(self, quantité: int) -> Disponibilité:
        return projection.vérifier_disponibilité(self.solde, quantité)

    def solde_débité(self, mouvement: Mouvement) -> Optional[int]:
        """
        Solde que le mouvement fait décroître, ou None pour une entrée.

        C'est la quantité que la garde compare à mouvement.quantité.
        """
        type_ = mouvement.type
        if type_ is TypeMouvement.ENTREE:
            return None
        if type_ in (TypeMouvement.SORTIE, TypeMouvement.LAYHER_LOCATION):
            return self.solde.quantité_disponible
        if type_ is TypeMouvement.RETOUR:
            return self.quantité_sur_chantier(mouvement.chantier_id)
        if type_ is TypeMouvement.HS:
            if mouvement.chantier_id:
                return self.quantité_sur_chantier(mouvement.chantier_id)
            return self.solde.quantité_disponible
        if type_ in (TypeMouvement.REPARATION, TypeMouvement.REBUT):
            return self.solde.quantité_hs
        location = self.location(mouvement.location_id)
        return location.quantité_restante if location else self.solde.quantité_layher

    # --- Écriture ---

    def enregistrer(self, mouvement: Mouvement) -> Mouvement:
        """
        Vérifie puis ajoute un mouvement au registre.

        Lève QuantitéInvalide, MouvementInvalide ou StockInsuffisant
        sans rien modifier. Les mouvements Layher doivent désigner une
        location connue (voir louer / retourner_location).
        """
        if type_mouvement(mouvement.type) is TypeMouvement.LAYHER_LOCATION:
            raise MouvementInvalide("Une location Layher s'ouvre avec louer()")
        self._valider(mouvement, self.location(mouvement.location_id))
        self._ajouter(mouvement)
        return mouvement

    def louer(
        self,
        numéro_commande: str,
        quantité: int,
        date_location: Optional[date] = None,
        date_retour_prévue: Optional[date] = None,
        coût_location: Optional[float] = None,
        notes: Optional[str] = None,
    ) -> LocationLayher:
        """Ouvre une location Layher et enregistre le mouvement layher_location."""
        if not numéro_commande:
            raise MouvementInvalide("Numéro de commande Layher obligatoire")
        location = LocationLayher(
            article_id=self.article_id,
            numéro_commande=numéro_commande,
            quantité=quantité,
            date_location=date_location,
            date_retour_prévue=date_retour_prévue,
            coût_location=coût_location,
            notes=notes,
        )
        mouvement = Mouvement(
            article_id=self.article_id,
            type=TypeMouvement.LAYHER_LOCATION,
            quantité=quantité,
            source="Layher",
            location_id=location.id,
            notes=f"Location {numéro_commande}",
        )
        self._valider(mouvement, location)
        self.locations.append(location)
        self._ajouter(mouvement)
        return location

    def retourner_location(
        self,
        location_id: str,
        quantité: Optional[int] = None,
        date_retour: Optional[date] = None,
    ) -> LocationLayher:
        """Rend tout ou partie d'une location ; quantité=None rend le reliquat."""
        location = self.location(location_id)
        if location is None:
            raise LocationInconnue(f"Location inconnue : {location_id}")
        if location.statut == LocationLayher.RETOURNE:
            raise LocationDéjàRetournée(
                f"La location {location.numéro_commande} est déjà retournée"
            )
        if quantité is None:
            quantité = location.quantité_restante
        self.enregistrer(
            Mouvement(
                article_id=self.article_id,
                type=TypeMouvement.LAYHER_RETOUR,
                quantité=quantité,
                destination="Layher",
                location_id=location.id,
                notes=f"Retour {location.numéro_commande}",
            )
        )
        if location.enregistrer_retour(quantité, date_retour):
            self.événements.append(
                events.LocationRetournée(
                    location_id=location.id,
                    article_id=self.article_id,
                    numéro_commande=location.numéro_commande,
                )
            )
        return location

    def reconstruire(self) -> bool:
        """
        Rejoue tout le registre et écrase les projections stockées.

        Renvoie True si une dérive a été corrigée (et émet DériveDétectée).
        """
        attendu = projection.projeter(self.mouvements).get(
            self.article_id, SoldeStock(article_id=self.article_id)
        )
        dérive = attendu.instantané() != self.solde.instantané()
        self.solde.recopier(attendu.instantané())

        par_chantier = {
            chantier_id: inventaire
            for (chantier_id, _), inventaire in projection.projeter_chantiers(self.mouvements).items()
        }
        for inventaire in self.inventaires:
            rejoué = par_chantier.pop(inventaire.chantier_id, None)
            livrée = rejoué.quantité_livrée if rejoué else 0
            reçue = rejoué.quantité_reçue if rejoué else 0
            if (livrée, reçue) != (inventaire.quantité_livrée, inventaire.quantité_reçue):
                dérive = True
                inventaire.quantité_livrée = livrée
                inventaire.quantité_reçue = reçue
        for rejoué in par_chantier.values():
            dérive = True
            self.inventaires.append(rejoué)

        retours = projection.projeter_retours_layher(self.mouvements)
        for location in self.locations:
            retournée = retours.get(location.id, 0)
            if retournée != location.quantité_retournée:
                dérive = True
                location.quantité_retournée = retournée

        if dérive:
            self.numéro_version += 1
            self.événements.append(events.DériveDétectée(article_id=self.article_id))
        return dérive

    def _valider(self, mouvement: Mouvement, location: Optional[LocationLayher]) -> None:
        if mouvement.article_id != self.article_id:
            raise MouvementInvalide(
                f"Mouvement pour {mouvement.article_id} enregistré sur {self.article_id}"
            )
        type_ = type_mouvement(mouvement.type)
        vérifier_quantité(mouvement.quantité)
        if type_ in TYPES_AVEC_CHANTIER and not mouvement.chantier_id:
            raise MouvementInvalide(f"Un mouvement {type_.value} exige un chantier")
        if type_ in (TypeMouvement.LAYHER_LOCATION, TypeMouvement.LAYHER_RETOUR):
            if location is None or location.id != mouvement.location_id:
                raise LocationInconnue(
                    f"Mouvement {type_.value} sans location Layher associée"
                )
            if type_ is TypeMouvement.LAYHER_RETOUR and location.statut == LocationLayher.RETOURNE:
                raise LocationDéjàRetournée(
                    f"La location {location.numéro_commande} est déjà retournée"
                )

        if not self.solde.est_cohérent():
            self.reconstruire()

        disponible = self.solde_débité(replace(mouvement, type=type_))
        if disponible is not None and disponible < mouvement.quantité:
            raise StockInsuffisant([
                LigneManquante(
                    article_id=self.article_id,
                    demandée=mouvement.quantité,
                    disponible=disponible,
                )
            ])

    def _ajouter(self, mouvement: Mouvement) -> None:
        type_ = type_mouvement(mouvement.type)
        if mouvement.type is not type_:
            mouvement = replace(mouvement, type=type_)
        self.mouvements.append(mouvement)
        projection.appliquer(self.solde, mouvement)
        if mouvement.chantier_id and projection.concerne_chantier(mouvement):
            inventaire = self.inventaire(mouvement.chantier_id)
            if inventaire is None:
                inventaire = InventaireChantier(
                    chantier_id=mouvement.chantier_id, article_id=self.article_id
                )
                self.inventaires.append(inventaire)
            projection.appliquer_chantier(inventaire, mouvement)
        self.numéro_version += 1
        self.événements.append(
            events.MouvementEnregistré(
                mouvement_id=mouvement.id,
                article_id=self.article_id,
                type=type_.value,
                quantité=mouvement.quantité,
                chantier_id=mouvement.chantier_id,
            )
        )
        if self.solde.quantité_disponible == 0 and projection.débite_disponible(mouvement):
            self.événements.append(events.RuptureDeStock(article_id=self.article_id))
