"""Seed a running Negosyo API with demo creators, drafts and one paid submission.

Tokens are minted locally with the development identity secret, so this only
works against a server sharing this checkout's settings. The first identity
must be listed in ADMIN_IDENTITY_IDS for the settlement steps to succeed.
"""
import asyncio
import os
import sys

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

import httpx

from negosyo.core.identity import create_identity_token

BASE_URL = os.environ.get("NEGOSYO_API_URL", "http://localhost:8000/api/v1")
ADMIN_SUBJECT = os.environ.get("SEED_ADMIN_SUBJECT", "idp|seed-admin")

CREATORS = [
    {"subject": "idp|seed-maria", "first_name": "Maria", "last_name": "Santos"},
    {"subject": "idp|seed-jose", "first_name": "Jose", "last_name": "Rizal"},
]

BUSINESSES = [
    {
        "business_name": "Aling Nena's Sari-Sari Store",
        "business_type": "sari_sari",
        "owner_name": "Nena Cruz",
        "owner_phone": "+639171234567",
        "city": "Quezon City",
        "province": "Metro Manila",
    },
    {
        "business_name": "Kape ni Lola",
        "business_type": "cafe",
        "owner_name": "Lola Basyang",
        "owner_phone": "+639181234567",
        "city": "Cebu City",
        "province": "Cebu",
    },
]


def _headers(subject: str) -> dict:
    token = create_identity_token(subject, email=f"{subject.split('|')[1]}@negosyo.test")
    return {"Authorization": f"Bearer {token}"}


async def _upload(client: httpx.AsyncClient, headers: dict, folder: str, filename: str, content_type: str,
                  data: bytes) -> str:
    resp = await client.post(
        f"{BASE_URL}/files/upload-target",
        json={"folder": folder, "filename": filename, "content_type": content_type},
        headers=headers,
    )
    resp.raise_for_status()
    target = resp.json()
    put = await client.put(target["upload_url"], content=data, headers=target["headers"])
    put.raise_for_status()
    return target["storage_key"]


async def seed():
    async with httpx.AsyncClient(timeout=30) as client:
        print("=== Seeding Negosyo Digital ===\n")

        referral_code = None
        creator_headers = []
        for profile in CREATORS:
            headers = _headers(profile["subject"])
            body = {"first_name": profile["first_name"], "last_name": profile["last_name"]}
            if referral_code:
                body["referred_by_code"] = referral_code
            resp = await client.post(f"{BASE_URL}/creators/me", json=body, headers=headers)
            if resp.status_code != 200:
                print(f"  Failed to register {profile['first_name']}: {resp.text}")
                continue
            creator = resp.json()
            referral_code = referral_code or creator["referral_code"]
            creator_headers.append(headers)
            print(f"  Creator: {creator['first_name']} (code {creator['referral_code']})")

        print()
        submissions = []
        for i, (headers, business) in enumerate(zip(creator_headers, BUSINESSES)):
            photos = [
                await _upload(client, headers, "images", f"seed-{i * 10 + n}.jpg", "image/jpeg", b"\xff\xd8seed")
                for n in range(3)
            ]
            resp = await client.post(f"{BASE_URL}/submissions", json={**business, "photos": photos}, headers=headers)
            resp.raise_for_status()
            sub = resp.json()
            audio_key = await _upload(client, headers, "audio", "interview.m4a", "audio/m4a", b"ftypM4A seed")
            await client.patch(f"{BASE_URL}/submissions/{sub['id']}", json={"audio_key": audio_key}, headers=headers)
            resp = await client.post(f"{BASE_URL}/submissions/{sub['id']}/submit", headers=headers)
            print(f"  Submission: {business['business_name']} -> {resp.json().get('status')}")
            submissions.append(sub["id"])

        if not submissions:
            return

        # Settle the referred creator's submission so the referrer's bonus shows up too.
        admin = _headers(ADMIN_SUBJECT)
        sid = submissions[-1]
        steps = [
            ("approve", None),
            ("website", {"website_url": "https://preview.negosyo.test/kape-ni-lola"}),
            ("deployed", {"website_url": "https://kape-ni-lola.negosyo.test"}),
            ("mark-paid", None),
        ]
        print()
        for action, body in steps:
            resp = await client.post(f"{BASE_URL}/admin/submissions/{sid}/{action}", json=body, headers=admin)
            if resp.status_code != 200:
                print(f"  Admin step '{action}' failed ({resp.status_code}): {resp.text}")
                print(f"  Add {ADMIN_SUBJECT} to ADMIN_IDENTITY_IDS and rerun.")
                return
            print(f"  Admin {action}: {resp.json()['status']}")

        print("\nSeed complete.")


if __name__ == "__main__":
    asyncio.run(seed())
