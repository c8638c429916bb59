"""Drug-likeness assessment of a SMILES string.

Physicochemical descriptors come from RDKit. They are checked against the
Lipinski, Veber and Ghose rule sets and summarised by the QED score
(Bickerton et al., 2012), which is what history records store as
``drug_likeness_score``.
"""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass, field
from functools import lru_cache
from typing import Any, Dict, List, Optional

from rdkit import Chem, RDLogger
from rdkit.Chem import QED, Crippen, Descriptors, Lipinski, rdMolDescriptors

RDLogger.DisableLog("rdApp.*")

logger = logging.getLogger(__name__)

DRUG_LIKE = "Drug-like"
LEAD_LIKE = "Lead-like"
FRAGMENT_LIKE = "Fragment-like"
NON_DRUG_LIKE = "Non-drug-like"


@dataclass(frozen=True)
class MolecularProperties:
    molecular_weight: float
    log_p: float
    h_donors: int
    h_acceptors: int
    rotatable_bonds: int
    polar_surface_area: float
    molar_refractivity: float
    atom_count: int


@dataclass(frozen=True)
class RuleCheck:
    passed: bool
    details: List[str] = field(default_factory=list)

    @property
    def violations(self) -> int:
        return len(self.details)


@dataclass(frozen=True)
class DrugLikenessReport:
    smiles: str
    classification: str
    qed_score: float
    properties: MolecularProperties
    lipinski: RuleCheck
    veber: RuleCheck
    ghose: RuleCheck
    violations: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        payload = asdict(self)
        for name in ("lipinski", "veber", "ghose"):
            payload[name]["violations"] = getattr(self, name).violations
        return payload


def _round(value: float) -> float:
    return round(float(value), 2)


def molecular_properties(mol: "Chem.Mol") -> MolecularProperties:
    return MolecularProperties(
        molecular_weight=_round(Descriptors.MolWt(mol)),
        log_p=_round(Crippen.MolLogP(mol)),
        h_donors=int(Lipinski.NumHDonors(mol)),
        h_acceptors=int(Lipinski.NumHAcceptors(mol)),
        rotatable_bonds=int(Lipinski.NumRotatableBonds(mol)),
        polar_surface_area=_round(rdMolDescriptors.CalcTPSA(mol)),
        molar_refractivity=_round(Crippen.MolMR(mol)),
        # Ghose counts every atom, hydrogens included.
        atom_count=int(Chem.AddHs(mol).GetNumAtoms()),
    )


def _lipinski(props: MolecularProperties) -> RuleCheck:
    details = []
    if props.molecular_weight > 500:
        details.append(f"MW > 500 ({props.molecular_weight})")
    if props.log_p > 5:
        details.append(f"LogP > 5 ({props.log_p})")
    if props.h_donors > 5:
        details.append(f"Donors > 5 ({props.h_donors})")
    if props.h_acceptors > 10:
        details.append(f"Acceptors > 10 ({props.h_acceptors})")
    # Rule of five tolerates a single violation.
    return RuleCheck(passed=len(details) <= 1, details=details)


def _veber(props: MolecularProperties) -> RuleCheck:
    details = []
    if props.rotatable_bonds > 10:
        details.append(f"Rotatable > 10 ({props.rotatable_bonds})")
    if props.polar_surface_area > 140:
        details.append(f"PSA > 140 ({props.polar_surface_area})")
    return RuleCheck(passed=not details, details=details)


def _ghose(props: MolecularProperties) -> RuleCheck:
    details = []
    if not 160 <= props.molecular_weight <= 480:
        details.append(f"MW outside 160-480 ({props.molecular_weight})")
    if not -0.4 <= props.log_p <= 5.6:
        details.append(f"LogP outside -0.4-5.6 ({props.log_p})")
    if not 40 <= props.molar_refractivity <= 130:
        details.append(f"MR outside 40-130 ({props.molar_refractivity})")
    if not 20 <= props.atom_count <= 70:
        details.append(f"Atoms outside 20-70 ({props.atom_count})")
    return RuleCheck(passed=not details, details=details)


def _violated_parameters(lipinski: RuleCheck, veber: RuleCheck, ghose: RuleCheck) -> List[str]:
    labels = {
        "MW": "Molecular Weight",
        "LogP": "LogP",
        "Donors": "H-Donors",
        "Acceptors": "H-Acceptors",
        "Rotatable": "Rotatable Bonds",
        "PSA": "Polar Surface Area",
        "MR": "Molar Refractivity",
        "Atoms": "Atom Count",
    }
    seen: List[str] = []
    for detail in lipinski.details + veber.details + ghose.details:
        label = labels[detail.split(" ", 1)[0]]
        if label not in seen:
            seen.append(label)
    return seen


def classify(props: MolecularProperties, lipinski: RuleCheck, veber: RuleCheck) -> str:
    if lipinski.violations == 0 and veber.violations == 0:
        return DRUG_LIKE
    if lipinski.violations <= 1 and props.molecular_weight < 450:
        return LEAD_LIKE
    if props.molecular_weight < 300:
        return FRAGMENT_LIKE
    return NON_DRUG_LIKE


def assess(smiles: str) -> Optional[DrugLikenessReport]:
    """Full drug-likeness report, or None when RDKit cannot parse ``smiles``."""
    mol = Chem.MolFromSmiles(smiles or "")
    if mol is None or mol.GetNumAtoms() == 0:
        return None
    props = molecular_properties(mol)
    lipinski, veber, ghose = _lipinski(props), _veber(props), _ghose(props)
    return DrugLikenessReport(
        smiles=smiles,
        classification=classify(props, lipinski, veber),
        qed_score=round(float(QED.qed(mol)), 3),
        properties=props,
        lipinski=lipinski,
        veber=veber,
        ghose=ghose,
        violations=_violated_parameters(lipinski, veber, ghose),
    )


@lru_cache(maxsize=4096)
def drug_likeness_score(smiles: str) -> Optional[float]:
    """QED score in [0, 1] for history records; None for unparsable SMILES."""
    report = assess(smiles)
    if report is None:
        logger.debug("No drug-likeness score for unparsable SMILES %r", smiles)
        return None
    return report.qed_score


__all__ = [
    "DRUG_LIKE",
    "FRAGMENT_LIKE",
    "LEAD_LIKE",
    "NON_DRUG_LIKE",
    "DrugLikenessReport",
    "MolecularProperties",
    "RuleCheck",
    "assess",
    "classify",
    "drug_likeness_score",
    "molecular_properties",
]
