"""Swiss SME chart of accounts template (simplified KMU structure).

Tuples are (code, name, nature, parent_code). Parents always precede
their children.
"""

from __future__ import annotations

SWISS_SME_CHART: list[tuple[str, str, str, str | None]] = [
    ("1", "Actifs", "asset", None),
    ("10", "Actifs circulants", "asset", "1"),
    ("1000", "Caisse", "asset", "10"),
    ("1020", "Banque", "asset", "10"),
    ("1100", "Créances clients", "asset", "10"),
    ("1170", "TVA préalable", "asset", "10"),
    ("2", "Passifs", "liability", None),
    ("20", "Dettes à court terme", "liability", "2"),
    ("2000", "Dettes fournisseurs", "liability", "20"),
    ("2200", "TVA due", "liability", "20"),
    ("2270", "Assurances sociales à payer", "liability", "20"),
    ("2279", "Salaires nets à payer", "liability", "20"),
    ("28", "Fonds propres", "liability", "2"),
    ("2800", "Capital", "liability", "28"),
    ("3", "Produits", "revenue", None),
    ("3000", "Produits des prestations", "revenue", "3"),
    ("5", "Charges de personnel", "expense", None),
    ("5000", "Salaires", "expense", "5"),
    ("5700", "Charges sociales", "expense", "5"),
    ("5800", "Autres charges de personnel", "expense", "5"),
    ("6", "Autres charges d'exploitation", "expense", None),
    ("6940", "Frais bancaires", "expense", "6"),
    ("9", "Comptes d'ordre", "memo", None),
]

# Accounts the default posting rules depend on; cannot be disabled.
SYSTEM_ACCOUNT_CODES = frozenset(
    {"1020", "1100", "2200", "2270", "2279", "3000", "5000", "5700", "5800", "6940"}
)
