"""External collaborator interfaces consumed by the job processors."""
