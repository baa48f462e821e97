# External system integrations
