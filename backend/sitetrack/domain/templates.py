"""Standard construction phase template.

Phases and initial steps loaded when a site is created. Order matters:
structural (gros oeuvre) phases unlock one after another in this order.
"""

from copy import deepcopy

from sitetrack.domain.models import Phase

# Each entry: phase key, name, description, category, optional steps (key, name, description)
STANDARD_PHASES: list[dict] = [
    {
        "id": "approvisionnement",
        "name": "Approvisionnement",
        "description": "Commande et réception des matériaux nécessaires",
        "category": "main",
    },
    # GROS OEUVRE
    {
        "id": "fondation",
        "name": "Fondation",
        "description": "Travaux de fondation complets",
        "category": "gros_oeuvre",
        "steps": [
            {"id": "implantation", "name": "Implantation", "description": "Marquage et positionnement des fondations"},
            {"id": "terrassement", "name": "Terrassement", "description": "Excavation et préparation du terrain"},
            {"id": "fondation", "name": "Fondation", "description": "Coulage des fondations"},
        ],
    },
    {
        "id": "elevation",
        "name": "Élévation",
        "description": "Construction des murs et structures verticales",
        "category": "gros_oeuvre",
        "steps": [
            {"id": "maconnerie", "name": "Maçonnerie", "description": "Construction des murs en maçonnerie"},
            {"id": "beton_arme", "name": "Éléments béton armé", "description": "Mise en place des éléments en béton armé"},
        ],
    },
    {
        "id": "coulage",
        "name": "Coulage",
        "description": "Coulage des dalles",
        "category": "gros_oeuvre",
        "steps": [
            {"id": "coulage_dalle", "name": "Coulage dalle", "description": "Coulage de la dalle de plancher"},
        ],
    },
    {
        "id": "verification_gros_oeuvre",
        "name": "Vérification gros œuvre",
        "description": "Contrôle qualité du gros œuvre",
        "category": "gros_oeuvre",
    },
    # SECOND OEUVRE
    {
        "id": "plomberie",
        "name": "Plomberie",
        "description": "Installation complète de la plomberie",
        "category": "second_oeuvre",
        "steps": [
            {"id": "alimentation", "name": "Alimentation", "description": "Installation du réseau d'alimentation en eau"},
            {"id": "evacuation", "name": "Évacuation", "description": "Installation du réseau d'évacuation"},
        ],
    },
    {
        "id": "electricite",
        "name": "Électricité",
        "description": "Installation électrique complète",
        "category": "second_oeuvre",
        "steps": [
            {"id": "fourretage", "name": "Fourretage", "description": "Passage des gaines électriques"},
            {"id": "cablage", "name": "Câblage", "description": "Installation des câbles électriques"},
        ],
    },
    {"id": "carrelage", "name": "Carrelage", "description": "Pose du carrelage", "category": "second_oeuvre"},
    {"id": "etancheite", "name": "Étanchéité", "description": "Travaux d'étanchéité", "category": "second_oeuvre"},
    {"id": "menuiserie", "name": "Menuiserie", "description": "Installation des menuiseries", "category": "second_oeuvre"},
    {"id": "faux_plafond", "name": "Faux plafond", "description": "Installation des faux plafonds", "category": "second_oeuvre"},
    {
        "id": "peinture",
        "name": "Peinture",
        "description": "Travaux de peinture complets",
        "category": "second_oeuvre",
        "steps": [
            {"id": "grattage", "name": "Grattage", "description": "Préparation des surfaces"},
            {"id": "couche_primaire", "name": "Application couche primaire", "description": "Application de la sous-couche"},
            {"id": "couche_secondaire", "name": "Application couche secondaire", "description": "Application de la couche de finition"},
        ],
    },
    {
        "id": "verification_second_oeuvre",
        "name": "Vérification second œuvre",
        "description": "Contrôle qualité du second œuvre",
        "category": "second_oeuvre",
    },
    {"id": "clef_en_main", "name": "Clef en main", "description": "Livraison finale du projet", "category": "main"},
]


def build_standard_phases() -> list[Phase]:
    """Return fresh Phase objects for the standard template, all at 0%.

    Returns:
        Ordered list of phases; each call returns independent objects.
    """
    return [Phase.model_validate(entry) for entry in deepcopy(STANDARD_PHASES)]
