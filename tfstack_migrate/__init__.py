"""HCP Terraform workspace to Stack state migration."""

__version__ = "0.1.0"
