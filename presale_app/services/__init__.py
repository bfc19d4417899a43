from presale_app.services.ledger import AssetLedger
from presale_app.services.presale import PresaleEngine
from presale_app.services.reporting import compute_distribution_report, compute_stage_report

__all__ = ["AssetLedger", "PresaleEngine", "compute_distribution_report", "compute_stage_report"]
