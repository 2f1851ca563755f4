"""
Reference Data for demo and training
Two customers, their orders and documented machine runs

Loaded from the dashboard (Data Management → Seed Reference Data) into an
empty organization so staff can try the machine-run screens on realistic
numbers. Names and NRICs are fictitious.
"""

from models import CrossCheckEntry, IndividualBagEntry, RunInputs


def _bags(date, weights, start=1):
    return tuple(
        IndividualBagEntry(id=f"bag-{date}-{i}", date=date, weight=w)
        for i, w in enumerate(weights, start=start)
    )


# ===== RUN 1 - clean run =====
# 11 bags over two days, 1,850g total
# Packaging 60g → 1,790g wet; powder 224g → 87.5% water content (in band)
# Cross check: 20g × 10 + 12g × 2 = 224g → 0.00% variance

RUN_TAN_1 = RunInputs(
    mama_name='Tan Mei Ling',
    mama_nric='S8712345A',
    date_expressed='2025-09-02',
    handled_by='Aisyah',
    verified_by='Priya',
    bags=(
        _bags('2025-09-02', ['180', '165', '172', '158', '175', '150'])
        + _bags('2025-09-03', ['170', '160', '168', '182', '170'], start=7)
    ),
    bags_weight='60',
    powder_weight='224',
    packing_requirements='1500',
    water_to_add='1500',
    water_activity_level='0.21',
    gram_ratio_staff_input='120',
    date_processed='2025-09-05',
    date_packed='2025-09-06',
    cross_checks=(
        CrossCheckEntry(id='check-tan-1', powder_weight='20', quantity='10'),
        CrossCheckEntry(id='check-tan-2', powder_weight='12', quantity='2'),
    ),
)

# ===== RUN 2 - discrepancy =====
# Re-weighed powder 15g × 8 = 120g vs declared 131g → -8.40% (outside ±5%)
# One bag at 420g (above the 30-400g band)

RUN_HALIMAH_1 = RunInputs(
    mama_name='Nur Halimah',
    mama_nric='S9054321B',
    date_expressed='2025-09-10',
    handled_by='Aisyah',
    remarks='Cross check short; one sachet torn during packing.',
    bags=_bags('2025-09-10', ['420', '210', '185', '230']),
    bags_weight='40',
    powder_weight='131',
    packing_requirements='900',
    water_to_add='900',
    water_activity_level='0.25',
    gram_ratio_staff_input='90',
    date_processed='2025-09-12',
    cross_checks=(
        CrossCheckEntry(id='check-halimah-1', powder_weight='15', quantity='8'),
    ),
)


REFERENCE_CUSTOMERS = [
    {
        'values': {
            'name': 'Tan Mei Ling',
            'phone': '+65 9123 4567',
            'shipping_addr_1': '12 Tampines Street 81',
            'shipping_addr_2': '#05-112',
            'postal_code': '520012',
            'shopify_customer_id': None,
        },
        'orders': [
            {
                'values': {
                    'shopify_order_id': '#1041',
                    'status': 'completed',
                    'arrival_temp': -18.5,
                    'arrival_weight': 2100.0,
                    'visual_check': 'passed',
                    'visual_check_remarks': None,
                    'shipping_addr_1': '12 Tampines Street 81',
                    'shipping_addr_2': '#05-112',
                    'postal_code': '520012',
                    'phone': '+65 9123 4567',
                },
                'machine_runs': [
                    {'inputs': RUN_TAN_1, 'status': 'completed'},
                ],
            },
        ],
    },
    {
        'values': {
            'name': 'Nur Halimah',
            'phone': '+65 8234 5678',
            'shipping_addr_1': '3 Jurong West Avenue 1',
            'shipping_addr_2': None,
            'postal_code': '640003',
            'shopify_customer_id': None,
        },
        'orders': [
            {
                'values': {
                    'shopify_order_id': '#1057',
                    'status': 'processing',
                    'arrival_temp': -16.0,
                    'arrival_weight': 1150.0,
                    'visual_check': 'flagged',
                    'visual_check_remarks': 'Outer box damp on arrival',
                    'shipping_addr_1': '3 Jurong West Avenue 1',
                    'shipping_addr_2': None,
                    'postal_code': '640003',
                    'phone': '+65 8234 5678',
                },
                'machine_runs': [
                    {'inputs': RUN_HALIMAH_1, 'status': 'documented'},
                ],
            },
        ],
    },
]
