"""
Mapping ORM avec SQLAlchemy (classical mapping).

On définit les tables séparément, puis on mappe les classes
du domaine sur ces tables. Cela permet au modèle de domaine
de rester ignorant de la persistance (persistence ignorance).

Les noms de colonnes SQL restent en ASCII pour la compatibilité,
le mapping traduit vers les attributs français du domaine.

Tables :
- mouvements : le registre, en ajout seul
- stock_global, inventaires_chantier, locations_layher : projections
  maintenues à chaque écriture, reconstructibles par rejeu
- stocks : une ligne par article, porte le numéro de version
"""

from sqlalchemy import (
    Boolean,
    Column,
    Date,
    DateTime,
    Enum,
    Float,
    ForeignKey,
    Integer,
    MetaData,
    String,
    Table,
    Text,
    UniqueConstraint,
    event,
    inspect,
)
from sqlalchemy.orm import registry, relationship

from echafaudage.adapters import immutabilite
from echafaudage.domain import model

metadata = MetaData()
mapper_registry = registry(metadata=metadata)

# --- Définition des tables ---

catalogue = Table(
    "catalogue",
    metadata,
    Column("id", String(32), primary_key=True),
    Column("reference", String(255), nullable=False, unique=True),
    Column("designation", String(255), nullable=False),
    Column("poids_unitaire", Float, nullable=False, server_default="0"),
    Column("categorie", String(255)),
    Column("reference_layher", String(255)),
    Column("actif", Boolean, nullable=False, server_default="1"),
    Column("cree_le", DateTime),
    Column("modifie_le", DateTime),
)

chantiers = Table(
    "chantiers",
    metadata,
    Column("id", String(32), primary_key=True),
    Column("numero", String(255), nullable=False, unique=True),
    Column("nom", String(255), nullable=False),
    Column("adresse", String(255)),
    Column("statut", String(20), nullable=False, server_default="actif"),
    Column("date_debut", Date),
    Column("date_fin", Date),
)

stocks = Table(
    "stocks",
    metadata,
    Column("article_id", String(32), primary_key=True),
    Column("numero_version", Integer, nullable=False, server_default="0"),
)

mouvements = Table(
    "mouvements",
    metadata,
    Column("id", String(32), primary_key=True),
    Column("article_id", String(32), ForeignKey("stocks.article_id"), nullable=False, index=True),
    Column(
        "type",
        Enum(
            model.TypeMouvement,
            name="type_mouvement",
            native_enum=False,
            values_callable=lambda types: [t.value for t in types],
        ),
        nullable=False,
    ),
    Column("quantite", Integer, nullable=False),
    Column("source", String(255)),
    Column("destination", String(255)),
    Column("chantier_id", String(32), index=True),
    Column("liste_id", String(255), index=True),
    Column("location_id", String(32)),
    Column("notes", Text),
    Column("cree_le", DateTime, nullable=False),
)

stock_global = Table(
    "stock_global",
    metadata,
    Column("article_id", String(32), ForeignKey("stocks.article_id"), primary_key=True),
    Column("quantite_totale", Integer, nullable=False, server_default="0"),
    Column("quantite_disponible", Integer, nullable=False, server_default="0"),
    Column("quantite_sur_chantier", Integer, nullable=False, server_default="0"),
    Column("quantite_hs", Integer, nullable=False, server_default="0"),
    Column("quantite_layher", Integer, nullable=False, server_default="0"),
)

inventaires_chantier = Table(
    "inventaires_chantier",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("chantier_id", String(32), nullable=False, index=True),
    Column("article_id", String(32), ForeignKey("stocks.article_id"), nullable=False),
    Column("quantite_livree", Integer, nullable=False, server_default="0"),
    Column("quantite_recue", Integer, nullable=False, server_default="0"),
    Column("dernier_mouvement_le", DateTime),
    UniqueConstraint("chantier_id", "article_id"),
)

locations_layher = Table(
    "locations_layher",
    metadata,
    Column("id", String(32), primary_key=True),
    Column("article_id", String(32), ForeignKey("stocks.article_id"), nullable=False),
    Column("numero_commande", String(255), nullable=False, index=True),
    Column("quantite", Integer, nullable=False),
    Column("quantite_retournee", Integer, nullable=False, server_default="0"),
    Column("date_location", Date, nullable=False),
    Column("date_retour_prevue", Date),
    Column("date_retour_effective", Date),
    Column("cout_location", Float),
    Column("statut", String(20), nullable=False, server_default="en_cours"),
    Column("notes", Text),
)


def start_mappers() -> None:
    """
    Configure le mapping entre les classes du domaine et les tables SQL.

    Utilise le classical mapping : les classes du domaine ne connaissent
    pas SQLAlchemy. Sans effet si le mapping est déjà en place.
    """
    if inspect(model.Stock, raiseerr=False) is not None:
        return

    mapper_registry.map_imperatively(
        model.ArticleCatalogue,
        catalogue,
        properties={
            "référence": catalogue.c.reference,
            "désignation": catalogue.c.designation,
            "catégorie": catalogue.c.categorie,
            "référence_layher": catalogue.c.reference_layher,
            "créé_le": catalogue.c.cree_le,
            "modifié_le": catalogue.c.modifie_le,
        },
    )
    mapper_registry.map_imperatively(
        model.Chantier,
        chantiers,
        properties={
            "numéro": chantiers.c.numero,
            "date_début": chantiers.c.date_debut,
        },
    )
    mouvements_mapper = mapper_registry.map_imperatively(
        model.Mouvement,
        mouvements,
        properties={
            "quantité": mouvements.c.quantite,
            "créé_le": mouvements.c.cree_le,
        },
    )
    soldes_mapper = mapper_registry.map_imperatively(
        model.SoldeStock,
        stock_global,
        properties={
            "quantité_totale": stock_global.c.quantite_totale,
            "quantité_disponible": stock_global.c.quantite_disponible,
            "quantité_sur_chantier": stock_global.c.quantite_sur_chantier,
            "quantité_hs": stock_global.c.quantite_hs,
            "quantité_layher": stock_global.c.quantite_layher,
        },
    )
    inventaires_mapper = mapper_registry.map_imperatively(
        model.InventaireChantier,
        inventaires_chantier,
        properties={
            "quantité_livrée": inventaires_chantier.c.quantite_livree,
            "quantité_reçue": inventaires_chantier.c.quantite_recue,
        },
    )
    locations_mapper = mapper_registry.map_imperatively(
        model.LocationLayher,
        locations_layher,
        properties={
            "numéro_commande": locations_layher.c.numero_commande,
            "quantité": locations_layher.c.quantite,
            "quantité_retournée": locations_layher.c.quantite_retournee,
            "date_retour_prévue": locations_layher.c.date_retour_prevue,
            "coût_location": locations_layher.c.cout_location,
        },
    )
    mapper_registry.map_imperatively(
        model.Stock,
        stocks,
        # Verrou optimiste : l'UPDATE porte sur la version lue, le domaine incrémente.
        version_id_col=stocks.c.numero_version,
        version_id_generator=False,
        properties={
            "numéro_version": stocks.c.numero_version,
            "solde": relationship(soldes_mapper, uselist=False),
            "inventaires": relationship(inventaires_mapper),
            "locations": relationship(
                locations_mapper, order_by=locations_layher.c.date_location
            ),
            # Ajout sans chargement ; l'historique n'est lu qu'au rejeu.
            "mouvements": relationship(
                mouvements_mapper, lazy="dynamic", order_by=mouvements.c.cree_le
            ),
        },
    )
    immutabilite.enregistrer_écouteurs()


@event.listens_for(model.Stock, "load")
def receive_load_stock(stock: model.Stock, _: object) -> None:
    """Initialise la liste d'événements quand un Stock est chargé depuis la BDD."""
    stock.événements = []


@event.listens_for(model.Chantier, "load")
def receive_load_chantier(chantier: model.Chantier, _: object) -> None:
    chantier.événements = []
