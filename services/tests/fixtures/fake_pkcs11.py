"""In-memory token exposing the python-pkcs11 calls the PKCS#11 keystore makes.

``FakeToken.modules()`` returns ``pkcs11``, ``pkcs11.util`` and
``pkcs11.util.ec`` modules for ``patch.dict("sys.modules", ...)``. Keys are
cryptography EC keys; ``sign`` returns raw r||s as a real token does.
"""

import enum
import types
from typing import Any

from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.hazmat.primitives.asymmetric.utils import decode_dss_signature

TOKEN_LABEL = "c2pa"


class PKCS11Error(RuntimeError):
    pass


class NoSuchKey(PKCS11Error):
    pass


class NoSuchToken(PKCS11Error):
    pass


class MultipleObjectsReturned(PKCS11Error):
    pass


class ObjectClass(enum.Enum):
    PUBLIC_KEY = 2
    PRIVATE_KEY = 3


class KeyType(enum.Enum):
    EC = 3


class Attribute(enum.Enum):
    CLASS = 0x000
    LABEL = 0x003
    EC_PARAMS = 0x180


class Mechanism(enum.Enum):
    ECDSA_SHA256 = 0x1044
    ECDSA_SHA384 = 0x1045
    ECDSA_SHA512 = 0x1046


_HASHES = {
    Mechanism.ECDSA_SHA256: hashes.SHA256,
    Mechanism.ECDSA_SHA384: hashes.SHA384,
    Mechanism.ECDSA_SHA512: hashes.SHA512,
}

_CURVES = {
    "secp256r1": ec.SECP256R1,
    "secp384r1": ec.SECP384R1,
    "secp521r1": ec.SECP521R1,
}


class FakeKey:
    def __init__(
        self,
        token: "FakeToken",
        object_class: ObjectClass,
        label: str,
        private_key: ec.EllipticCurvePrivateKey,
    ) -> None:
        self.token = token
        self.object_class = object_class
        self.label = label
        self.private_key = private_key

    def sign(self, data: bytes, mechanism: Mechanism) -> bytes:
        der = self.private_key.sign(data, ec.ECDSA(_HASHES[mechanism]()))
        r, s = decode_dss_signature(der)
        size = (self.private_key.curve.key_size + 7) // 8
        self.token.sign_calls += 1
        return r.to_bytes(size, "big") + s.to_bytes(size, "big")

    def destroy(self) -> None:
        self.token.objects.remove(self)


class FakeDomainParameters:
    def __init__(self, token: "FakeToken", curve_name: str) -> None:
        self.token = token
        self.curve_name = curve_name

    def generate_keypair(self, store: bool = False, label: str | None = None) -> None:
        private_key = ec.generate_private_key(_CURVES[self.curve_name]())
        self.token.objects.append(FakeKey(self.token, ObjectClass.PRIVATE_KEY, label, private_key))
        self.token.objects.append(FakeKey(self.token, ObjectClass.PUBLIC_KEY, label, private_key))


class FakeSession:
    def __init__(self, token: "FakeToken", rw: bool) -> None:
        self.token = token
        self.rw = rw

    def __enter__(self) -> "FakeSession":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.token.open_sessions -= 1

    def get_key(self, object_class: ObjectClass, label: str) -> FakeKey:
        matches = [
            o for o in self.token.objects if o.object_class is object_class and o.label == label
        ]
        if not matches:
            raise NoSuchKey(label)
        if len(matches) > 1:
            raise MultipleObjectsReturned(label)
        return matches[0]

    def get_objects(self, template: dict[Attribute, Any]) -> list[FakeKey]:
        return [
            o
            for o in self.token.objects
            if o.object_class is template[Attribute.CLASS] and o.label == template[Attribute.LABEL]
        ]

    def create_domain_parameters(
        self, key_type: KeyType, attrs: dict[Attribute, Any], local: bool = False
    ) -> FakeDomainParameters:
        assert self.rw, "key generation needs a read-write session"
        assert key_type is KeyType.EC
        return FakeDomainParameters(self.token, attrs[Attribute.EC_PARAMS])


class FakeToken:
    def __init__(self, label: str = TOKEN_LABEL) -> None:
        self.label = label
        self.objects: list[FakeKey] = []
        self.pins: list[str | None] = []
        self.open_sessions = 0
        self.sign_calls = 0

    def open(self, user_pin: str | None = None, rw: bool = False) -> FakeSession:
        self.pins.append(user_pin)
        self.open_sessions += 1
        return FakeSession(self, rw)

    def modules(self) -> dict[str, types.ModuleType]:
        token = self

        class FakeLib:
            def __init__(self, path: str) -> None:
                self.path = path

            def get_token(self, token_label: str) -> FakeToken:
                if token_label != token.label:
                    raise NoSuchToken(token_label)
                return token

        def encode_named_curve_parameters(oid: str) -> str:
            return oid

        def encode_ec_public_key(key: FakeKey) -> bytes:
            return key.private_key.public_key().public_bytes(
                encoding=serialization.Encoding.DER,
                format=serialization.PublicFormat.SubjectPublicKeyInfo,
            )

        root = types.ModuleType("pkcs11")
        util = types.ModuleType("pkcs11.util")
        util_ec = types.ModuleType("pkcs11.util.ec")
        util_ec.encode_named_curve_parameters = encode_named_curve_parameters
        util_ec.encode_ec_public_key = encode_ec_public_key
        util.ec = util_ec
        root.util = util
        root.lib = FakeLib
        for cls in (
            PKCS11Error,
            NoSuchKey,
            NoSuchToken,
            MultipleObjectsReturned,
            ObjectClass,
            KeyType,
            Attribute,
            Mechanism,
        ):
            setattr(root, cls.__name__, cls)
        return {"pkcs11": root, "pkcs11.util": util, "pkcs11.util.ec": util_ec}
