"""RepoRadar background jobs - asynchronous batch analysis and data exports.

Queue, workers, processors, metrics and notifications for long-running work
offloaded from the RepoRadar web service.
"""

__version__ = "0.1.0"
