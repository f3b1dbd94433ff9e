"""Instance types, pricing and subnet and security group discovery for node autoscaling on Oracle Cloud Infrastructure."""

__version__ = "0.1.0"

__all__ = [
    "models",
    "quantity",
    "utils",
    "instance_types",
    "metrics",
    "pricing",
    "instancetype_provider",
    "network",
]