from .codec import BundleEntry, BundleManifest, export_bundle, import_bundle

__all__ = ["BundleEntry", "BundleManifest", "export_bundle", "import_bundle"]
