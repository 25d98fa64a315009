"""
데모 데이터 시딩 스크립트
- 데모 조직 1개: 로케이션 60개, 재고 품목 40개 (초기 수량은 원장에 "Initial stock"으로 기록)
- 실행: cd backend && python seed_data.py
"""

import asyncio
import os
import random
import sys

# backend/ 디렉토리 기준으로 stockflow 패키지를 찾을 수 있도록 경로 설정
sys.path.insert(0, os.path.dirname(os.path.abspath(__file__)))

from stockflow.database import engine, Base
from stockflow.domain.location_codec import LocationParts
from stockflow.schemas.inventory import InventoryItemCreate
from stockflow.services import InventoryRecordStore, LocationService

DEMO_ORGANIZATION = "demo-org"
SEED_ACTOR = "seed-script"

CATEGORIES = {
    "Fasteners": [("Hex Bolt M8", 0.12), ("Hex Nut M8", 0.05), ("Washer M8", 0.02), ("Wood Screw 4x40", 0.04)],
    "Electrical": [("Cable Tie 200mm", 0.03), ("Terminal Block 12P", 1.8), ("Fuse 5A", 0.25), ("Relay 24V", 4.5)],
    "Packaging": [("Carton 40x30x30", 0.9), ("Stretch Film 500mm", 7.2), ("Bubble Wrap Roll", 12.0), ("Packing Tape", 1.1)],
    "Safety": [("Nitrile Gloves L", 6.5), ("Safety Glasses", 3.2), ("Ear Plugs (200)", 18.0), ("Hi-Vis Vest", 4.8)],
    "Cleaning": [("Floor Cleaner 5L", 9.5), ("Microfiber Cloth", 0.7), ("Spill Kit", 45.0), ("Trash Bags 120L", 0.35)],
}

VENDORS = ["VND-ACME", "VND-NORTHWIND", "VND-CONTOSO", None]


def seed_locations(service: LocationService) -> list[str]:
    """A~C 구역 × 2열 × 5베이 × 2단 로케이션"""
    canonicals = []
    for area in ("A", "B", "C"):
        for row in ("01", "02"):
            for bay in ("01", "02", "03", "04", "05"):
                for level in ("1", "2"):
                    parts = LocationParts(area=area, row=row, bay=bay, level=level, pos="A")
                    location = service.upsert_location(
                        DEMO_ORGANIZATION, parts,
                        display_name=f"Area {area} / Row {row} / Bay {bay} / L{level}",
                        color={"A": "blue", "B": "green", "C": "orange"}[area],
                    )
                    canonicals.append(location.canonical)
    print(f"  [OK] Locations: {len(canonicals)}개 생성")
    return canonicals


async def seed_items(store: InventoryRecordStore, canonicals: list[str]) -> int:
    """카테고리별 SKU 생성 — 일부는 재주문 수준 이하로 시작"""
    count = 0
    picking_locations = [c for c in canonicals if c.split("-")[3] == "1"]
    bulk_locations = [c for c in canonicals if c.split("-")[3] == "2"]

    for category, products in CATEGORIES.items():
        for idx, (name, unit_cost) in enumerate(products, start=1):
            for variant in ("STD", "BULK"):
                count += 1
                reorder_level = random.choice([10, 20, 50])
                low = random.random() < 0.2
                picking = random.randint(0, reorder_level // 2) if low else random.randint(reorder_level, reorder_level * 3)
                overstock = 0 if low else random.randint(0, reorder_level * 5)
                vendor = random.choice(VENDORS)

                await store.create_item(
                    DEMO_ORGANIZATION,
                    InventoryItemCreate(
                        sku=f"{category[:3].upper()}-{idx:02d}-{variant}",
                        name=f"{name} ({variant.lower()})",
                        category=category,
                        picking_bin_quantity=picking,
                        overstock_quantity=overstock,
                        reorder_level=reorder_level,
                        picking_reorder_level=max(1, reorder_level // 2),
                        unit_cost=unit_cost,
                        retail_price=round(unit_cost * random.uniform(1.4, 2.2), 2),
                        location=random.choice(bulk_locations),
                        picking_bin_location=random.choice(picking_locations),
                        vendor_id=vendor,
                        auto_reorder_enabled=vendor is not None,
                        auto_reorder_quantity=reorder_level * 4 if vendor else 0,
                    ),
                    actor_id=SEED_ACTOR,
                )
    print(f"  [OK] Inventory items: {count}개 생성")
    return count


def main():
    print("=" * 60)
    print("Stockflow — 데모 데이터 시딩")
    print("=" * 60)

    # 테이블 재생성
    print("\n[1/3] 테이블 생성 중...")
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    print("  [OK] 테이블 생성 완료")

    random.seed(42)
    try:
        print("\n[2/3] Locations 시딩...")
        canonicals = seed_locations(LocationService())

        print("\n[3/3] Inventory 시딩...")
        # 변경 피드 없이 저장소만 사용 (서버 기동 전 시딩)
        items = asyncio.run(seed_items(InventoryRecordStore(), canonicals))

        print("\n" + "=" * 60)
        print("시딩 완료!")
        print(f"  Organization: {DEMO_ORGANIZATION}")
        print(f"  Locations:    {len(canonicals)}개")
        print(f"  Items:        {items}개")
        print("=" * 60)

    except Exception as e:
        print(f"\n[ERROR] 시딩 실패: {e}")
        raise


if __name__ == "__main__":
    main()
