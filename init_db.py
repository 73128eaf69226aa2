#!/usr/bin/env python3
"""Database initialization script"""
from crm import create_app, db, services


def init_database():
    """Initialize the database with tables and sample data"""
    app = create_app()

    with app.app_context():
        # Drop all tables and recreate
        print("Creating database tables...")
        db.drop_all()
        db.create_all()

        print("Creating sample users...")
        manager = services.create_user('Morgan Reyes', 'manager@company.com', 'manager')
        salesperson = services.create_user('Sam Ortiz', 'sales@company.com', 'salesperson')

        print("Creating sample lead and job...")
        lead = services.create_lead('Dana Whitfield', 'referral', assigned_to=salesperson.id)
        job = services.create_job({
            'job_name': '14 Maple Ct attic and walls',
            'lead_id': lead.id,
            'service_type': 'insulation',
            'building_type': 'residential',
        })

        print("Adding measurements...")
        services.add_measurement(job.id, {
            'room_name': 'Attic',
            'surface_type': 'ceiling',
            'area_type': 'ceiling',
            'height': '24',
            'width': '36',
            'insulation_type': 'blown_in',
            'thickness_inches': '14',
        })
        services.add_measurement(job.id, {
            'room_name': 'Family Room',
            'surface_type': 'wall',
            'area_type': 'exterior_walls',
            'height': '8',
            'width': '22',
            'insulation_type': 'hybrid',
            'closed_cell_inches': '2',
            'open_cell_inches': '3',
            'framing_size': '2x6',
        })

        print("Generating estimate...")
        estimate = services.generate_estimate(job.id)
        print(f"  {estimate.estimate_number}: ${estimate.total_amount:,.2f} "
              f"(approval required: {estimate.to_priced().requires_approval})")

        print("\nDatabase initialized successfully!")
        print(f"Manager user id: {manager.id}")


if __name__ == '__main__':
    init_database()
