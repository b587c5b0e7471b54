"""Session storage: records, backing stores, file access and the save scheduler."""
