def normalize_image_name(image: str) -> str:
    """Reduce an image reference to the key used to match VulnerabilityReports.

    Removes the digest and tag, drops the registry and repository path and
    lowercases the rest, so "docker.io/library/nginx:1.21" becomes "nginx".
    Malformed references still produce a (possibly meaningless) key.
    """
    # Remove digest if present (e.g., @sha256:...)
    if '@' in image:
        image = image.split('@', 1)[0]

    # Remove tag, unless the last colon belongs to a registry port
    idx = image.rfind(':')
    if idx != -1 and '/' not in image[idx:]:
        image = image[:idx]

    if '/' in image:
        image = image.split('/')[-1]

    # Malformed refs like "img:a:b" keep a colon after the steps above
    image = image.split(':', 1)[0]

    return image.lower()
