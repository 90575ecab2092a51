"""Advisory text service client"""

from swaprouter.advisory.client import AdvisoryClient, parse_advice

__all__ = ["AdvisoryClient", "parse_advice"]
