SAMPLE_SERVICES = [
    {
        'kind': 'training',
        'title': 'LMV Training (Basic)',
        'short_description': 'Complete LMV training for beginners with hands-on experience',
        'description': (
            'Comprehensive Light Motor Vehicle (LMV) training program for beginners. '
            'Learn the fundamentals of safe driving with our experienced instructors.'
        ),
        'category': 'LMV',
        'icon': 'Car',
        'features': [
            'Experienced instructors',
            'Dual control vehicles',
            'Flexible timings',
            'Certificate of completion',
            'Free pickup and drop',
        ],
        'details': {
            'duration': {'value': 30, 'unit': 'days'},
            'prerequisites': ["Valid Learner's License", 'Age 18+'],
            'instructor_required': True,
            'max_students': 1,
            'booking_settings': {
                'require_approval': False,
                'allow_rescheduling': True,
                'cancellation_policy': 'Free cancellation up to 24 hours before the session',
                'advance_booking_days': 3,
            },
        },
        'pricing': {'basePrice': 6000, 'currency': 'INR', 'taxes': {'gst': 18}},
        'priority': 1,
    },
    {
        'kind': 'training',
        'title': 'HMV Training (Heavy Motor Vehicle)',
        'short_description': 'Complete HMV training for commercial vehicle licensing',
        'description': (
            'Professional Heavy Motor Vehicle training for commercial driving licenses. '
            'Learn to operate trucks, buses and other heavy vehicles safely.'
        ),
        'category': 'HMV',
        'icon': 'Truck',
        'cta_text': 'Enroll Now',
        'features': [
            'Professional instructors',
            'Heavy vehicle practice',
            'Commercial license prep',
            'Safety certification',
            'Job placement assistance',
        ],
        'details': {
            'duration': {'value': 45, 'unit': 'days'},
            'prerequisites': ['Valid LMV License', 'Age 20+', 'Medical fitness certificate'],
            'instructor_required': True,
            'max_students': 2,
            'booking_settings': {
                'require_approval': True,
                'allow_rescheduling': True,
                'cancellation_policy': 'Cancellation fee applies after 48 hours',
                'advance_booking_days': 7,
            },
        },
        'pricing': {'basePrice': 11000, 'currency': 'INR', 'taxes': {'gst': 18}},
        'priority': 2,
    },
    {
        'kind': 'training',
        'title': 'MCWG Training (Motorcycle with Gear)',
        'short_description': 'Two-wheeler training with gear for new riders',
        'description': 'Motorcycle training covering balance, gear control and city traffic riding.',
        'category': 'MCWG',
        'icon': 'Bike',
        'features': ['Certified instructors', 'Practice bikes provided', 'Safety gear included'],
        'details': {
            'duration': {'value': 2, 'unit': 'weeks'},
            'instructor_required': True,
            'max_students': 1,
        },
        'pricing': {'basePrice': 5000, 'currency': 'INR', 'taxes': {'gst': 18}},
        'priority': 3,
    },
    {
        'kind': 'training',
        'title': 'Refresher Course',
        'short_description': 'Regain confidence behind the wheel',
        'description': 'Short refresher sessions for licensed drivers returning to the road.',
        'category': 'Refresher',
        'icon': 'RefreshCw',
        'features': ['Personalised plan', 'Highway practice', 'Parking drills'],
        'details': {
            'duration': {'value': 1, 'unit': 'weeks'},
            'instructor_required': True,
            'max_students': 1,
        },
        'pricing': {'basePrice': 3500, 'currency': 'INR', 'taxes': {'gst': 18}},
        'priority': 4,
    },
    {
        'kind': 'online',
        'title': 'DL Printout Service',
        'short_description': 'Get a printed copy of your driving licence',
        'description': 'We print and laminate your driving licence from the official portal.',
        'category': 'Document',
        'icon': 'Printer',
        'features': ['Lamination included', 'Same day processing'],
        'details': {
            'processing_time': {'value': 30, 'unit': 'minutes'},
            'delivery_method': 'physical',
            'automated_processing': False,
            'requires_verification': True,
        },
        'pricing': {'basePrice': 450, 'currency': 'INR', 'taxes': {}},
        'priority': 1,
    },
    {
        'kind': 'online',
        'title': 'License Download (Free)',
        'short_description': 'Download your digital driving licence',
        'description': 'Step-by-step help downloading your licence from DigiLocker or Parivahan.',
        'category': 'Download',
        'icon': 'Download',
        'features': ['Instant guidance', 'No charges'],
        'details': {
            'processing_time': {'value': 2, 'unit': 'minutes'},
            'delivery_method': 'download',
            'automated_processing': True,
            'requires_verification': False,
        },
        'pricing': {'basePrice': 0, 'currency': 'INR', 'taxes': {}},
        'priority': 2,
    },
    {
        'kind': 'online',
        'title': 'Certificate Verification',
        'short_description': 'Verify a DriveRight training certificate',
        'description': 'Verification of training certificates for employers and RTO submissions.',
        'category': 'Verification',
        'icon': 'BadgeCheck',
        'features': ['Emailed verification letter'],
        'details': {
            'processing_time': {'value': 2, 'unit': 'hours'},
            'delivery_method': 'email',
            'automated_processing': False,
            'requires_verification': True,
        },
        'pricing': {'basePrice': 200, 'currency': 'INR', 'taxes': {}},
        'priority': 3,
    },
]
