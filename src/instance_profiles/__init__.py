"""A package for managing the instance profiles of Karpenter EC2NodeClasses.

This package exposes high level classes for rotating the IAM instance profile
of an EC2NodeClass when its role changes, and for deleting the retired instance
profiles once no EC2 instance uses them anymore.
"""
