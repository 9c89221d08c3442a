"""
Errors shared by the lifecycle jobs
"""


class InputResolutionError(Exception):
    """A lead, stage, team or pipeline the run depends on does not exist"""
    pass
