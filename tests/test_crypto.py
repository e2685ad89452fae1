"""
Cryptographic primitive tests for SecureLink.

Covers key agreement, session key derivation, AES-256-GCM, compression,
nonce construction and secure erasure.
"""

import os
import struct

import pytest

from securelink.crypto.aead import encrypt, decrypt
from securelink.crypto.compression import compress, decompress
from securelink.crypto.kdf import Role, derive_session_keys, build_handshake_salt
from securelink.crypto.keys import PeerPublicKey, generate_keypair, agree
from securelink.crypto.utils import SecureBytes, build_nonce, generate_nonce_mask, secure_erase
from securelink.errors import (
    AuthenticationFailure,
    KeyAgreementFailure,
    MalformedCiphertext,
    MalformedFrame,
    ValidationFailure,
)


class TestKeyAgreement:
    """Test X25519 key pairs and agreement."""

    def test_agreement_symmetry(self):
        """Both sides of an agreement compute the same secret."""
        a = generate_keypair()
        b = generate_keypair()

        secret_ab = agree(a.private_key, b.public_key)
        secret_ba = agree(b.private_key, a.public_key)

        assert secret_ab == secret_ba
        assert len(secret_ab) == 32

    def test_different_peers_different_secrets(self):
        a, b, c = generate_keypair(), generate_keypair(), generate_keypair()
        assert agree(a.private_key, b.public_key) != agree(a.private_key, c.public_key)

    def test_public_key_is_raw_32_bytes(self):
        keypair = generate_keypair()
        assert len(keypair.public_key.raw) == 32
        assert keypair.public_key.algorithm == "X25519"

    def test_malformed_peer_key_rejected(self):
        """A public key of the wrong length fails agreement."""
        a = generate_keypair()
        with pytest.raises(KeyAgreementFailure):
            agree(a.private_key, PeerPublicKey(b"\x01" * 31))

    def test_wrong_algorithm_rejected(self):
        a = generate_keypair()
        b = generate_keypair()
        with pytest.raises(KeyAgreementFailure):
            agree(a.private_key, PeerPublicKey(b.public_key.raw, algorithm="P-256"))

    def test_low_order_point_rejected(self):
        """The all-zero point yields an all-zero secret, which is refused."""
        a = generate_keypair()
        with pytest.raises(KeyAgreementFailure):
            agree(a.private_key, PeerPublicKey(b"\x00" * 32))

    def test_base64_round_trip(self):
        key = generate_keypair().public_key
        assert PeerPublicKey.from_base64(key.to_base64()) == key

    def test_invalid_base64_rejected(self):
        with pytest.raises(KeyAgreementFailure):
            PeerPublicKey.from_base64("not base64!!")

    def test_matches(self):
        a = generate_keypair().public_key
        b = generate_keypair().public_key
        assert a.matches(PeerPublicKey(a.raw))
        assert not a.matches(b)


class TestKeyDerivation:
    """Test HKDF session key derivation."""

    def test_derivation_consistency(self):
        """Same secret and salt always give the same key pair."""
        secret = os.urandom(32)
        salt = os.urandom(32)

        first = derive_session_keys(secret, salt)
        second = derive_session_keys(secret, salt)

        assert first.initiator_to_responder == second.initiator_to_responder
        assert first.responder_to_initiator == second.responder_to_initiator

    def test_directional_keys_differ(self):
        keys = derive_session_keys(os.urandom(32), os.urandom(32))
        assert len(keys.initiator_to_responder) == 32
        assert len(keys.responder_to_initiator) == 32
        assert keys.initiator_to_responder != keys.responder_to_initiator

    def test_different_salts_different_keys(self):
        secret = os.urandom(32)
        first = derive_session_keys(secret, b"\x01" * 32)
        second = derive_session_keys(secret, b"\x02" * 32)
        assert first.initiator_to_responder != second.initiator_to_responder
        assert first.responder_to_initiator != second.responder_to_initiator

    def test_different_info_different_keys(self):
        secret, salt = os.urandom(32), os.urandom(32)
        first = derive_session_keys(secret, salt, b"v1-session-keys")
        second = derive_session_keys(secret, salt, b"v2-session-keys")
        assert first.initiator_to_responder != second.initiator_to_responder

    def test_role_mirroring(self):
        """The initiator's transmit key is the responder's receive key."""
        keys = derive_session_keys(os.urandom(32), os.urandom(32))

        initiator_tx, initiator_rx = keys.for_role(Role.INITIATOR)
        responder_tx, responder_rx = keys.for_role(Role.RESPONDER)

        assert initiator_tx == responder_rx
        assert initiator_rx == responder_tx

    def test_invalid_secret_length(self):
        with pytest.raises(KeyAgreementFailure):
            derive_session_keys(b"short", os.urandom(32))

    def test_empty_salt_rejected(self):
        with pytest.raises(KeyAgreementFailure):
            derive_session_keys(os.urandom(32), b"")

    def test_erase(self):
        keys = derive_session_keys(os.urandom(32), os.urandom(32))
        keys.erase()
        assert keys.initiator_to_responder == bytearray(32)
        assert keys.responder_to_initiator == bytearray(32)

    def test_handshake_salt_depends_on_transcript(self):
        a = generate_keypair().public_key.raw
        b = generate_keypair().public_key.raw

        salt = build_handshake_salt(1001, 1700000000000, a, b)
        assert len(salt) == 32
        assert salt == build_handshake_salt(1001, 1700000000000, a, b)
        assert salt != build_handshake_salt(1002, 1700000000000, a, b)
        assert salt != build_handshake_salt(1001, 1700000000001, a, b)
        assert salt != build_handshake_salt(1001, 1700000000000, b, a)


class TestAEAD:
    """Test AES-256-GCM encryption."""

    def setup_method(self):
        self.key = os.urandom(32)
        self.nonce = os.urandom(12)
        self.aad = b"header bytes"

    def test_round_trip(self):
        ciphertext, tag = encrypt(self.key, b"Hello, SecureLink!", self.aad, self.nonce)
        assert len(tag) == 16
        assert len(ciphertext) == len(b"Hello, SecureLink!")
        assert decrypt(self.key, ciphertext, self.aad, self.nonce, tag) == b"Hello, SecureLink!"

    def test_bytearray_key(self):
        key = bytearray(self.key)
        ciphertext, tag = encrypt(key, b"in place", self.aad, self.nonce)
        assert decrypt(key, ciphertext, self.aad, self.nonce, tag) == b"in place"

    def test_wrong_key_fails_authentication(self):
        ciphertext, tag = encrypt(self.key, b"secret", self.aad, self.nonce)
        with pytest.raises(AuthenticationFailure):
            decrypt(os.urandom(32), ciphertext, self.aad, self.nonce, tag)

    def test_modified_aad_fails_authentication(self):
        ciphertext, tag = encrypt(self.key, b"secret", self.aad, self.nonce)
        with pytest.raises(AuthenticationFailure):
            decrypt(self.key, ciphertext, b"other header", self.nonce, tag)

    def test_modified_tag_fails_authentication(self):
        ciphertext, tag = encrypt(self.key, b"secret", self.aad, self.nonce)
        bad_tag = bytes([tag[0] ^ 0x01]) + tag[1:]
        with pytest.raises(AuthenticationFailure):
            decrypt(self.key, ciphertext, self.aad, self.nonce, bad_tag)

    def test_short_tag_is_malformed(self):
        ciphertext, tag = encrypt(self.key, b"secret", self.aad, self.nonce)
        with pytest.raises(MalformedCiphertext):
            decrypt(self.key, ciphertext, self.aad, self.nonce, tag[:8])

    def test_invalid_key_length(self):
        with pytest.raises(ValidationFailure):
            encrypt(b"short", b"data", self.aad, self.nonce)
        with pytest.raises(ValidationFailure):
            decrypt(b"short", b"data", self.aad, self.nonce, b"\x00" * 16)

    def test_invalid_nonce_length(self):
        with pytest.raises(ValidationFailure):
            encrypt(self.key, b"data", self.aad, b"short")

    def test_empty_plaintext_rejected(self):
        with pytest.raises(ValidationFailure):
            encrypt(self.key, b"", self.aad, self.nonce)

    def test_empty_ciphertext_rejected(self):
        with pytest.raises(ValidationFailure):
            decrypt(self.key, b"", self.aad, self.nonce, b"\x00" * 16)


class TestCompression:
    """Test threshold compression."""

    def test_small_data_unchanged(self):
        data = b"A" * 1024
        assert compress(data) is data

    def test_large_compressible_data_shrinks(self):
        data = b"A" * 5000
        compressed = compress(data)
        assert len(compressed) < len(data)
        assert decompress(compressed, len(data)) == data

    def test_incompressible_data_unchanged(self):
        data = os.urandom(4096)
        assert compress(data) == data

    def test_custom_threshold(self):
        data = b"B" * 200
        assert compress(data, threshold=100) != data
        assert compress(data, threshold=200) == data

    def test_size_mismatch_is_malformed(self):
        data = b"A" * 5000
        compressed = compress(data)
        with pytest.raises(MalformedFrame):
            decompress(compressed, 4000)
        with pytest.raises(MalformedFrame):
            decompress(compressed, 6000)

    def test_garbage_is_malformed(self):
        with pytest.raises(MalformedFrame):
            decompress(b"definitely not deflate", 100)

    def test_zero_original_size_is_malformed(self):
        with pytest.raises(MalformedFrame):
            decompress(compress(b"A" * 5000), 0)


class TestNonce:
    """Test per-frame nonce construction."""

    def test_layout(self):
        nonce = build_nonce(1001, 7, 42)
        assert len(nonce) == 12
        assert struct.unpack('!III', nonce) == (1001, 7, 42)

    def test_unique_per_sequence(self):
        nonces = {build_nonce(1, 2, seq) for seq in range(1000)}
        assert len(nonces) == 1000

    def test_out_of_range_rejected(self):
        with pytest.raises(ValidationFailure):
            build_nonce(2 ** 32, 1, 1)
        with pytest.raises(ValidationFailure):
            build_nonce(1, -1, 1)

    def test_mask_keeps_prefix(self):
        nonce = build_nonce(1001, 7, 42, mask=0xDEADBEEF)
        assert nonce[:8] == struct.pack('!II', 1001, 7)
        assert struct.unpack('!I', nonce[8:])[0] == 42 ^ 0xDEADBEEF

    def test_fixed_mask_keeps_nonces_unique(self):
        mask = generate_nonce_mask()
        nonces = {build_nonce(1, 2, seq, mask) for seq in range(1, 1001)}
        assert len(nonces) == 1000

    def test_mask_out_of_range_rejected(self):
        with pytest.raises(ValidationFailure):
            build_nonce(1, 2, 3, mask=2 ** 32)


class TestSecureErase:
    """Test in-place erasure of key material."""

    def test_erase_bytearray(self):
        data = bytearray(b"secret key material")
        secure_erase(data)
        assert data == bytearray(len(b"secret key material"))

    def test_erase_memoryview(self):
        data = bytearray(b"secret")
        secure_erase(memoryview(data))
        assert data == bytearray(6)

    def test_immutable_bytes_rejected(self):
        with pytest.raises(TypeError):
            secure_erase(b"immutable")

    def test_secure_bytes_clear(self):
        key = SecureBytes(b"\x42" * 32)
        buffer = key.raw_view()
        assert bytes(key) == b"\x42" * 32

        key.clear()

        assert key.is_cleared()
        assert buffer == bytearray(32)
        with pytest.raises(ValueError):
            bytes(key)

    def test_secure_bytes_context_manager(self):
        with SecureBytes(b"\x01" * 16) as key:
            assert len(key) == 16
        assert key.is_cleared()
