"""Pull container images from OCI and Docker V2 registries"""
