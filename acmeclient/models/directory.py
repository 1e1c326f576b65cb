import josepy


class Directory(josepy.JSONObjectWithFields):
    """The ACME server's directory of resource URLs.

    `7.1.1. Directory <https://tools.ietf.org/html/rfc8555#section-7.1.1>`_

    Deserialization fails if any of the five resource URLs the client relies on is missing.
    """

    key_change: str = josepy.Field("keyChange")
    """URL used to roll over the account key."""
    new_account: str = josepy.Field("newAccount")
    """URL used to find or create an account."""
    new_nonce: str = josepy.Field("newNonce")
    """URL that hands out fresh replay nonces."""
    new_order: str = josepy.Field("newOrder")
    """URL used to create new orders."""
    revoke_cert: str = josepy.Field("revokeCert")
    """URL used to revoke certificates."""
    meta: dict = josepy.Field("meta", omitempty=True)
