"""Detect drift between fetched cloud provider tables and Terraform state."""