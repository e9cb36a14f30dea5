"""Cloud inventory drift detection, Terraform state loading, modules and provider registry tools."""

__version__ = "0.1.0"